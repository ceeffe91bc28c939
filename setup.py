"""Package setup for Invoice Tax Engine."""

from setuptools import setup, find_packages

setup(
    name="invoice-tax-engine",
    version="1.0.0",
    description="Idempotent invoice tax computation backed by an external tax engine",
    long_description=open("README.md", encoding="utf-8").read(),
    long_description_content_type="text/markdown",
    packages=find_packages(exclude=["tests", "tests.*", "examples"]),
    python_requires=">=3.10",
    install_requires=[
        "rich>=13.0",
        "structlog>=23.1",
        "httpx>=0.25",
        "SQLAlchemy>=2.0",
        "pydantic>=2.0",
        "pydantic-settings>=2.0",
    ],
    extras_require={
        "test": [
            "pytest>=7.0",
        ],
    },
    entry_points={
        "console_scripts": [
            "invoice-tax=invoice_tax.cli:main",
        ],
    },
    classifiers=[
        "Development Status :: 4 - Beta",
        "Intended Audience :: Financial and Insurance Industry",
        "Programming Language :: Python :: 3",
        "Programming Language :: Python :: 3.10",
        "Programming Language :: Python :: 3.11",
        "Programming Language :: Python :: 3.12",
        "Topic :: Office/Business :: Financial :: Accounting",
    ],
    keywords="sales-tax invoicing billing idempotent audit",
)
