#!/usr/bin/env python

from setuptools import setup

setup(
    name="lumina",
    version="1.0.0",
    description="Photo gallery storage on top of a GitHub repository",
    author="Lumina developers",
    packages=["lumina", "lumina.api", "lumina.storage"],
    include_package_data=True,
    zip_safe=False,
    python_requires=">=3.11",
    keywords=["API", "photos", "github"],
    classifiers=[
        "License :: OSI Approved :: MIT License",
        "Topic :: Multimedia :: Graphics",
    ],
    install_requires=[
        "fastapi",
        "httpx",
        "python-multipart",
        "python-dotenv",
        "pydantic>=2",
        "pydantic-settings",
        "uvicorn",
    ],
    extras_require={
        "dev": [
            "pytest",
            "pytest-httpx>=0.35",
            "anyio",
            "mypy",
            "flake8",
        ]
    },
    entry_points={"console_scripts": ["lumina = lumina.__main__:main"]},
)
