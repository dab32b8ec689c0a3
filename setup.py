from setuptools import setup, find_packages

setup(
    name="nutri-reminders",
    version="0.1.0",
    packages=find_packages(exclude=["tests", "tests.*"]),
    python_requires=">=3.9",
    install_requires=[
        "fastapi",
        "uvicorn",
        "sqlalchemy>=2.0",
        "psycopg2-binary",
        "redis",
        "python-dotenv",
        "pydantic>=2",
        "pydantic-settings>=2.7",
        "celery",
        "kombu",
        "prometheus-client",
        "prometheus-fastapi-instrumentator",
        "firebase-admin",
    ],
    extras_require={
        "test": [
            "pytest",
            "httpx",
        ],
    },
)
