from setuptools import setup, find_packages

setup(
    name="geolayers",
    version="0.1",
    packages=find_packages(exclude=["tests", "tests.*"]),
    python_requires=">=3.9",
    install_requires=[
        'fastapi>=0.110',
        'uvicorn>=0.29',
        'sqlalchemy>=2.0',
        'pydantic>=2.5',
        'requests>=2.31.0',
        'python-dotenv>=1.0.1',
        'python-multipart>=0.0.9',
        'folium>=0.15',
    ],
    extras_require={
        'test': [
            'pytest>=7.4',
            'httpx>=0.25',
        ],
    },
)
