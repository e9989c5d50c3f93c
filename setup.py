from setuptools import setup, find_packages

setup(
    name="mealledger",
    version="0.1.0",
    packages=find_packages(include=["mealledger", "mealledger.*"]),
    python_requires=">=3.12",
    install_requires=[
        "fastapi",
        "uvicorn",
        "pydantic>=2",
        "pydantic-settings",
        "sqlalchemy[asyncio]>=2.0",
        "asyncpg",
        "aiosqlite",
    ],
    extras_require={
        "test": [
            "pytest",
            "pytest-asyncio",
            "httpx",
        ],
    },
)
