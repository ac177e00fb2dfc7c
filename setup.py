from setuptools import setup, find_packages

setup(
    name="couplet-reminders",
    version="0.1.0",
    packages=find_packages(exclude=["tests", "tests.*"]),
    python_requires=">=3.10",
    install_requires=[
        "fastapi",
        "uvicorn",
        "sqlalchemy>=2.0",
        "pydantic>=2",
        "pydantic-settings",
        "celery",
        "firebase-admin",
        "prometheus-client",
        "prometheus-fastapi-instrumentator",
        "python-dateutil",
        "tzdata",
    ],
    extras_require={
        "test": [
            "pytest",
            "httpx",
        ],
    },
)
