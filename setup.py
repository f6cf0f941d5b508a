"""
FetchTube — setuptools build script.

Usage:
    # Development (editable install):
    pip install -e .[test]

    # Run the server:
    fetchtube-server --port 5000
"""

from setuptools import setup, find_namespace_packages

APP_NAME = "fetchtube"

setup(
    name=APP_NAME,
    version="1.0.0",
    description="yt-dlp download server for the FetchTube mobile app",
    packages=find_namespace_packages(include=["fetchtube", "fetchtube.*"]),
    py_modules=["main"],
    install_requires=[
        "requests>=2.28.0",
        "fastapi>=0.100.0",
        "uvicorn>=0.23.0",
        "pydantic>=2.0",
    ],
    extras_require={
        "test": [
            "pytest>=7.0",
            "httpx>=0.24.0",
        ],
    },
    python_requires=">=3.10",
    entry_points={
        "console_scripts": [
            "fetchtube-server=main:main",
        ],
    },
)
