from setuptools import setup, find_packages

with open("README.md", "r", encoding="utf-8") as fh:
    long_description = fh.read()

setup(
    name="realty-access",
    version="0.1.0",
    description="Tenant-scoped authorization core for a multi-tenant real-estate CRM",
    long_description=long_description,
    long_description_content_type="text/markdown",
    packages=find_packages(exclude=["tests", "tests.*"]),
    classifiers=[
        "Development Status :: 3 - Alpha",
        "Intended Audience :: Developers",
        "Framework :: FastAPI",
        "Programming Language :: Python :: 3",
        "Programming Language :: Python :: 3.11",
        "Operating System :: OS Independent",
    ],
    python_requires=">=3.11",
    install_requires=[
        "fastapi>=0.104.1",
        "uvicorn[standard]>=0.24.0",
        "pydantic[email]>=2.5.0",
        "pydantic-settings>=2.1.0",
        "redis>=5.0.1",
        "sqlalchemy>=2.0.23",
        "structlog>=23.2.0",
        "httpx>=0.25.2",
        "python-jose[cryptography]>=3.3.0",
        "bcrypt>=4.0.1",
        "prometheus-client>=0.19.0",
    ],
    extras_require={
        "test": [
            "pytest>=7.4.3",
            "pytest-asyncio>=0.21.1",
        ],
    },
    entry_points={
        "console_scripts": [
            "realty-access-seed=realty_access.seed:main",
        ],
    },
)
