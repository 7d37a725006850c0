"""
Setup script for hemisphere-runtime.

Hemisphere runtime is the client-side session engine of the Hemisphere
learning application. It covers three concerns:

1. Presentation Queue - ordered items, cursor, seen/skip bookkeeping
2. Response Ledger - learner responses and derived accuracy/latency
3. Outbox - durable, retrying delivery of responses to the API

The 'hemisphere' command inspects and drains the persisted outbox.
"""

from setuptools import find_packages, setup

setup(
    name="hemisphere-runtime",
    version="1.0.0",
    description="Session runtime and response outbox for the Hemisphere learning app",
    long_description=open("README.md", encoding="utf-8").read() if __import__("os").path.exists("README.md") else "",
    long_description_content_type="text/markdown",
    author="Hemisphere",
    packages=find_packages(exclude=["tests", "tests.*"]),
    py_modules=["config"],
    python_requires=">=3.10",
    install_requires=[
        # CLI
        "typer>=0.9.0",
        "rich>=13.0.0",
        # Config & Validation
        "pydantic>=2.0.0",
        "pydantic-settings>=2.0.0",
        # HTTP
        "httpx>=0.25.0",
        # Logging
        "loguru>=0.7.0",
    ],
    extras_require={
        "dev": [
            "pytest>=7.0.0",
            "pytest-asyncio>=0.21.0",
            "pytest-cov>=4.0.0",
            "ruff>=0.1.0",
            "mypy>=1.0.0",
        ],
    },
    entry_points={
        "console_scripts": [
            "hemisphere=hemisphere.cli.main:run",
        ],
    },
    classifiers=[
        "Development Status :: 4 - Beta",
        "Intended Audience :: Developers",
        "Intended Audience :: Education",
        "License :: OSI Approved :: MIT License",
        "Operating System :: OS Independent",
        "Programming Language :: Python :: 3",
        "Programming Language :: Python :: 3.10",
        "Programming Language :: Python :: 3.11",
        "Programming Language :: Python :: 3.12",
        "Topic :: Education",
        "Topic :: Education :: Computer Aided Instruction (CAI)",
    ],
    keywords="learning session outbox offline-first education",
)
