from setuptools import setup, find_packages

setup(
    name="varie-avatar-sdk",
    version="0.1.0",
    description="Discover Varie AI characters and download their Spine model bundles",
    packages=find_packages(include=["avatar_sdk", "avatar_sdk.*"]),
    install_requires=[
        "httpx>=0.27",
        "pydantic>=2.5",
        "pydantic-settings>=2.1",
        "redis>=5.0.1",
    ],
    extras_require={
        "test": [
            "pytest>=8.0",
            "pytest-asyncio>=0.23",
            "respx>=0.21",
        ],
    },
    python_requires=">=3.11",
)
