from setuptools import setup, find_packages

setup(
    name="moltmark",
    version="0.1.0",
    description="Capability certification ledger and trust scoring for AI agents",
    long_description=open("README.md").read(),
    long_description_content_type="text/markdown",
    package_dir={"": "src"},
    packages=find_packages(where="src"),
    install_requires=[
        "asyncpg>=0.29.0",
        "fastapi>=0.110.0",
        "pydantic>=2.5.0",
        "uvicorn>=0.27.0",
        "httpx>=0.27.0",
        "python-json-logger>=3.1.0",
    ],
    extras_require={"dev": ["pytest>=7.0", "pytest-asyncio>=0.23"]},
    entry_points={"console_scripts": ["moltmark=moltmark.cli:main"]},
    python_requires=">=3.9",
    classifiers=[
        "Development Status :: 3 - Alpha",
        "Intended Audience :: Developers",
        "Framework :: FastAPI",
        "Topic :: Software Development :: Libraries",
        "Programming Language :: Python :: 3",
    ],
    keywords="agent trust certification capability mcp",
)
