"""Setup script for jobnet-runner."""

from setuptools import find_packages, setup

setup(
    name="jobnet-runner",
    version="1.0.0",
    description="Batch job orchestrator for data warehouse jobnets",
    packages=find_packages(exclude=["tests", "tests.*"]),
    python_requires=">=3.11",
    install_requires=[
        "click>=8.1.7",
        "rich>=13.7.0",
        "psycopg2-binary>=2.9.9",
        "python-dotenv>=1.0.0",
        "structlog>=24.1.0",
        "pyyaml>=6.0.1",
        "pydantic>=2.5.0",
        "pydantic-settings>=2.1.0",
        "tenacity>=8.2.3",
        "prometheus-client>=0.19.0",
        "networkx>=3.2",
    ],
    extras_require={
        "test": [
            "pytest>=7.4.0",
        ],
    },
    entry_points={
        "console_scripts": [
            "jobnet=jobnet.cli.main:main",
        ],
    },
)
