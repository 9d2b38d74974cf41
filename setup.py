from setuptools import setup, find_packages

setup(
    name="rulebook-orchestrator",
    version="0.1.0",
    description="Local orchestration server for rulebook workers, webhooks and tunnels",
    author="Rulebook Orchestrator Team",
    packages=find_packages(include=["config", "config.*", "orchestrator", "orchestrator.*", "server", "server.*"]),
    install_requires=[
        "starlette>=0.37.0",
        "uvicorn[standard]>=0.29.0",
        "click>=8.0.0",
        "pydantic>=2.0.0",
        "psutil>=5.9.0",
        "aiohttp>=3.9.0",
        "multidict>=6.0.0",
        "pyyaml>=6.0",
        "ngrok>=1.0.0",
    ],
    extras_require={
        "test": [
            "pytest>=7.0.0",
            "pytest-asyncio>=0.23.0",
            "httpx>=0.25.0",
        ],
        "dev": [
            "pytest>=7.0.0",
            "pytest-asyncio>=0.23.0",
            "httpx>=0.25.0",
            "black>=22.0.0",
            "isort>=5.0.0",
        ],
    },
    entry_points={
        "console_scripts": [
            "rulebook-orchestrator=server.main:main",
        ],
    },
    python_requires=">=3.11",
)
