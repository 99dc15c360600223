from __future__ import annotations

from pathlib import Path

from setuptools import find_packages, setup

# Read README for long description
this_directory = Path(__file__).parent
long_description = (this_directory / "README.md").read_text()

setup(
    # Package metadata
    name="floworx",
    version="1.0.0",
    description="Onboarding, mailbox label provisioning and n8n workflow deployment for email automation",
    long_description=long_description,
    long_description_content_type="text/markdown",
    # Package discovery
    packages=find_packages(include=["floworx", "floworx.*", "scripts"]),
    package_data={
        "floworx.schemas": ["data/*.json"],
        "floworx.prompts": ["templates/*.txt"],
        "floworx.workflows": ["templates/*.json"],
    },
    # Dependencies
    install_requires=[
        "fastapi>=0.104.1",
        "uvicorn>=0.24.0",
        "pydantic>=2.5.0",
        "python-dotenv>=1.0.0",
        "requests>=2.31.0",
        "cachetools>=5.3.0",
        "cryptography>=41.0.0",
        "google-api-python-client>=2.100.0",
        "google-auth>=2.23.0",
        "google-auth-oauthlib>=1.1.0",
    ],
    # Optional dependencies (for development)
    extras_require={
        "dev": [
            "pytest>=7.0.0",
            "httpx>=0.25.0",
            "black>=23.0.0",
            "mypy>=1.0.0",
            "ruff>=0.1.0",
        ],
    },
    # CLI commands
    entry_points={
        "console_scripts": [
            "floworx-api=floworx.api:main",
            "floworx-smoke-test=scripts.smoke_test:main",
            "floworx-diagnose=scripts.diagnose_workflow:main",
            "floworx-provision-labels=scripts.provision_labels:main",
            "floworx-oauth-setup=scripts.oauth_setup:main",
        ],
    },
    # Python version requirement
    python_requires=">=3.11",
    # PyPI classifiers
    classifiers=[
        "Development Status :: 3 - Alpha",
        "Intended Audience :: Developers",
        "Programming Language :: Python :: 3",
        "Programming Language :: Python :: 3.11",
        "Programming Language :: Python :: 3.12",
        "Operating System :: OS Independent",
    ],
)
