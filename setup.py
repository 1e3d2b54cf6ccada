from setuptools import setup, find_packages

setup(
    name="aiflow-engine",
    version="0.2.0",
    packages=find_packages(exclude=["tests", "tests.*"]),
    py_modules=["flow"],
    install_requires=[
        "pydantic>=2.0",
        "networkx>=3.0",
        "loguru>=0.7",
        "requests>=2.28",
        "opentelemetry-api>=1.20",
    ],
    extras_require={
        "test": [
            "pytest>=7.0",
        ],
    },
    entry_points={
        "console_scripts": [
            "aiflow=flow:main",
        ],
    },
    python_requires=">=3.10",
)
