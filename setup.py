"""
Setup script for RFD Discussions
"""
from setuptools import setup, find_packages

setup(
    name="rfd-discussions",
    version="0.1.0",
    packages=find_packages(include=["rfd_discussions", "rfd_discussions.*"]),
    install_requires=[
        "fastapi>=0.115.0",
        "uvicorn>=0.30.0",
        "pydantic>=2.8.0",
        "sqlalchemy[asyncio]>=2.0.30",
        "python-dotenv>=1.0.1",
        "httpx>=0.27.0",
        "aiosqlite>=0.20.0",
        "asyncpg>=0.30.0",
    ],
    extras_require={
        "test": [
            "pytest>=8.0.0",
            "pytest-asyncio>=0.23.0",
        ],
    },
    description="RFD Discussions - keeps chat discussions in sync with RFD webhook events",
    author="SynApps Team",
    author_email="synapps.info@nxtg.ai",
    classifiers=[
        "Development Status :: 3 - Alpha",
        "Intended Audience :: Developers",
        "Programming Language :: Python :: 3.11",
        "Programming Language :: Python :: 3.12",
    ],
)
