"""Tests for the remote backend clients, system layers and documents."""
from unittest.mock import MagicMock

import pytest
import requests

from geolayers.api.services import document_service
from geolayers.api.services.remote_service import (
    DuplicateRecordError,
    IdentityClient,
    PermissionDeniedError,
    RecordNotFoundError,
    RecordsClient,
    RemoteError,
    RemoteNotConfigured,
    RemoteUnavailableError,
    StorageClient,
    http_session,
)
from geolayers.api.services.system_layers import (
    build_system_layers,
    fetch_system_layers,
    parse_record_coordinates,
)


def _response(status=200, body=None, content=b""):
    response = MagicMock()
    response.status_code = status
    response.ok = 200 <= status < 300
    response.json.return_value = body if body is not None else []
    response.text = ""
    response.reason = "Error"
    response.content = content
    return response


def _http(*responses):
    """requests.Session stand-in answering with the given responses in order"""
    http = MagicMock()
    http.request.side_effect = list(responses)
    return http


def _records(*responses):
    return RecordsClient(base_url="https://db.example.org/", api_key="anon", session=_http(*responses))


def _storage(*responses):
    return StorageClient(bucket="documents", base_url="https://db.example.org", api_key="anon",
                         session=_http(*responses))


@pytest.mark.unit
class TestRecordsClient:

    def test_select_builds_query(self):
        client = _records(_response(body=[{"id": 1}]))

        rows = client.select("companies", "*", {"user_id": "u1"}, order=[("name", True), ("id", False)])

        assert rows == [{"id": 1}]
        method, url = client.http.request.call_args.args
        kwargs = client.http.request.call_args.kwargs
        assert method == "GET"
        assert url == "https://db.example.org/rest/v1/companies"
        assert kwargs["params"] == {"select": "*", "user_id": "eq.u1", "order": "name.asc,id.desc"}
        assert kwargs["headers"]["apikey"] == "anon"
        assert kwargs["headers"]["Authorization"] == "Bearer anon"

    def test_access_token_is_sent(self):
        client = RecordsClient(base_url="https://db.example.org", api_key="anon",
                               access_token="jwt", session=_http(_response()))
        client.select("companies")
        assert client.http.request.call_args.kwargs["headers"]["Authorization"] == "Bearer jwt"

    def test_insert_returns_row(self):
        client = _records(_response(201, [{"id": "d1", "name": "x"}]))

        row = client.insert("process_documents", {"name": "x"})

        assert row == {"id": "d1", "name": "x"}
        assert client.http.request.call_args.kwargs["headers"]["Prefer"] == "return=representation"

    def test_unique_violation(self):
        client = _records(_response(409, {"code": "23505", "message": "duplicate key value"}))

        with pytest.raises(DuplicateRecordError) as excinfo:
            client.insert("companies", {"cnpj": "1"})

        assert excinfo.value.code == "23505"
        assert excinfo.value.status_code == 409

    @pytest.mark.parametrize("status,error", [
        (404, RecordNotFoundError),
        (401, PermissionDeniedError),
        (403, PermissionDeniedError),
        (500, RemoteError),
    ])
    def test_error_mapping(self, status, error):
        client = _records(_response(status, {"message": "falhou"}))
        with pytest.raises(error, match="falhou"):
            client.select("companies")

    def test_network_failure(self):
        http = MagicMock()
        http.request.side_effect = requests.exceptions.ConnectionError("down")
        client = RecordsClient(base_url="https://db.example.org", api_key="anon", session=http)

        with pytest.raises(RemoteUnavailableError):
            client.select("companies")
        assert http.request.call_count == 1

    def test_timeout(self):
        http = MagicMock()
        http.request.side_effect = requests.exceptions.Timeout()
        client = RecordsClient(base_url="https://db.example.org", api_key="anon", session=http)

        with pytest.raises(RemoteUnavailableError, match="esgotado"):
            client.select("companies")

    def test_not_configured(self):
        client = RecordsClient(base_url="", api_key="", session=MagicMock())
        with pytest.raises(RemoteNotConfigured):
            client.select("companies")
        client.http.request.assert_not_called()

    def test_delete_requires_filter(self):
        with pytest.raises(ValueError):
            _records().delete("companies", {})


@pytest.mark.unit
class TestStorageAndIdentity:

    def test_upload_path_is_quoted(self):
        storage = _storage(_response())

        storage.upload("u1/p1/1_relatório final.pdf", b"%PDF", "application/pdf")

        method, url = storage.http.request.call_args.args
        assert method == "POST"
        assert url == "https://db.example.org/storage/v1/object/documents/u1/p1/1_relat%C3%B3rio%20final.pdf"
        assert storage.http.request.call_args.kwargs["headers"]["Content-Type"] == "application/pdf"

    def test_remove(self):
        storage = _storage(_response())
        storage.remove(["a/b.pdf"])
        assert storage.http.request.call_args.kwargs["json"] == {"prefixes": ["a/b.pdf"]}

    def test_invalid_session_has_no_user(self):
        identity = IdentityClient(base_url="https://db.example.org", api_key="anon",
                                  session=_http(_response(401, {"message": "invalid JWT"})))
        assert identity.get_user("expired") is None

    def test_clients_share_one_connection_pool(self):
        records = RecordsClient(base_url="https://db.example.org", api_key="anon")
        storage = StorageClient(base_url="https://db.example.org", api_key="anon", access_token="jwt")

        assert records.http is http_session
        assert storage.http is records.http
        assert isinstance(http_session, requests.Session)


@pytest.mark.unit
class TestSystemLayers:

    def test_parse_record_coordinates(self):
        assert parse_record_coordinates("-23.55, -46.63") == [-46.63, -23.55]
        assert parse_record_coordinates("sem localização") is None
        assert parse_record_coordinates("abc, -46") is None
        assert parse_record_coordinates(None) is None

    def test_build_layers(self):
        processes = [
            {"id": 1, "coordinates": "-23.55, -46.63", "companies": {"name": "Mineradora X"}, "status": "em_analise"},
            {"id": 2, "coordinates": None},
            {"id": 3, "coordinates": "-22.9, -43.2", "companies": None},
        ]
        companies = [{"id": 9, "name": "Mineradora X", "coordinates": "-23.5, -46.6"}]

        processes_def, companies_def = build_system_layers(processes, companies)

        assert processes_def.id == "processes"
        assert processes_def.name == "Processos de Licenciamento"
        assert processes_def.color == "#3B82F6"
        assert [f.name for f in processes_def.features] == ["Mineradora X", "Processo"]
        assert processes_def.features[0].properties["type"] == "process"
        assert processes_def.features[0].properties["status"] == "em_analise"
        assert companies_def.id == "companies"
        assert companies_def.features[0].coordinates == (-46.6, -23.5)

    def test_empty_collections_have_no_layer(self):
        assert build_system_layers([], [{"id": 1, "coordinates": None}]) == []

    def test_fetch(self):
        client = _records(
            _response(body=[{"id": 1, "coordinates": "-10, -50", "companies": {"name": "A"}}]),
            _response(body=[]),
        )

        layer_defs = fetch_system_layers(client, "u1")

        assert [d.id for d in layer_defs] == ["processes"]
        first_call = client.http.request.call_args_list[0]
        assert first_call.kwargs["params"]["select"] == "*,companies(*)"
        assert first_call.kwargs["params"]["order"] == "created_at.desc"
        assert first_call.kwargs["params"]["user_id"] == "eq.u1"


@pytest.mark.unit
class TestDocuments:

    def test_document_path(self):
        assert document_service.document_path("u1", "p1", "a/b.pdf", 1700000000000) == "u1/p1/1700000000000_a_b.pdf"

    def test_upload_stores_file_then_row(self):
        storage = _storage(_response())
        records = _records(_response(201, [{"id": "d1"}]))

        document = document_service.upload_document(records, storage, "u1", "p1", "laudo.pdf", b"123", "application/pdf")

        assert document == {"id": "d1"}
        row = records.http.request.call_args.kwargs["json"]
        assert row["file_size"] == 3
        assert row["file_path"].startswith("u1/p1/")
        assert row["file_path"].endswith("_laudo.pdf")

    def test_failed_row_removes_stored_file(self):
        storage = _storage(_response(), _response())
        records = _records(_response(409, {"code": "23505", "message": "duplicate"}))

        with pytest.raises(DuplicateRecordError):
            document_service.upload_document(records, storage, "u1", "p1", "laudo.pdf", b"123")

        assert storage.http.request.call_count == 2
        assert storage.http.request.call_args.args[0] == "DELETE"

    def test_failed_cleanup_keeps_duplicate_error(self):
        storage = _storage(_response(), _response(500, {"message": "storage down"}))
        records = _records(_response(409, {"code": "23505", "message": "duplicate"}))

        with pytest.raises(DuplicateRecordError) as excinfo:
            document_service.upload_document(records, storage, "u1", "p1", "laudo.pdf", b"123")

        assert excinfo.value.status_code == 409
        assert storage.http.request.call_count == 2

    def test_delete_checks_owner(self):
        records = _records(_response(body=[{"id": "d1", "user_id": "other", "file_path": "x"}]))
        storage = _storage()

        with pytest.raises(PermissionDeniedError):
            document_service.delete_document(records, storage, "d1", "u1")
        storage.http.request.assert_not_called()

    def test_delete_removes_row_even_if_file_removal_fails(self):
        records = _records(
            _response(body=[{"id": "d1", "user_id": "u1", "file_path": "u1/p1/1_a.pdf"}]),
            _response(204),
        )
        storage = _storage(_response(500, {"message": "storage down"}))

        document_service.delete_document(records, storage, "d1", "u1")

        assert records.http.request.call_args.args[0] == "DELETE"

    def test_missing_document(self):
        with pytest.raises(RecordNotFoundError):
            document_service.get_document(_records(_response(body=[])), "d1")
