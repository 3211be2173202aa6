from setuptools import setup, find_namespace_packages

setup(
    name="scenegate",
    version="0.1.0",
    packages=find_namespace_packages(include=["scenegate", "scenegate.*"]),
    python_requires=">=3.11",
    install_requires=[
        "fastapi",
        "starlette",
        "itsdangerous",
        "pydantic>=2",
        "pydantic-settings>=2",
        "httpx",
        "uvicorn",
    ],
    extras_require={
        "test": [
            "pytest",
            "pytest-asyncio",
            "respx",
        ],
    },
)
