from setuptools import setup, find_packages

setup(
    name="tracking_service",
    version="0.1.0",
    packages=find_packages(exclude=["tests", "tests.*"]),
    package_data={"tracking_service": ["services/*.yaml"]},
    include_package_data=True,
    install_requires=[
        "fastapi",
        "uvicorn",
        "sqlalchemy[asyncio]",
        "asyncpg",
        "python-jose[cryptography]",
        "httpx",
        "pydantic>=2",
        "python-dotenv",
        "pyyaml",
        "structlog"
    ],
    extras_require={
        "test": [
            "pytest",
            "pytest-asyncio",
            "pytest-timeout",
        ],
    },
    entry_points={
        "console_scripts": [
            "tracking-service=tracking_service.main:main",
        ],
    },
)
