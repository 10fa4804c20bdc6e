"""
Setup script for the TaskStore_Ops package.
"""

from setuptools import setup, find_packages

setup(
    name="taskstore_ops",
    version="0.1.0",
    description="Task store connection management: retry, health monitoring and lifecycle events",
    author="Shubham Singh",
    author_email="shubh2014shiv@gmail.com",
    packages=find_packages(exclude=["tests", "tests.*"]),
    py_modules=["taskstore_ops_exceptions"],
    install_requires=[
        "pymilvus>=2.3.0",
        "pydantic>=2.0.0,<3.0.0",
        "pydantic-settings>=2.0.0",
        "pyyaml>=6.0",
        "tenacity>=8.2.0",  # For retry logic
    ],
    extras_require={
        "dev": [
            "pytest>=7.0.0",
            "pytest-asyncio>=0.21.0",
            "pytest-cov>=4.0.0",
            "black>=23.0.0",
            "isort>=5.12.0",
            "mypy>=1.0.0",
            "flake8>=6.0.0",
        ],
    },
    entry_points={
        "console_scripts": [
            "taskstore-supervisor=connection_management.supervisor:main",
        ],
    },
    classifiers=[
        "Development Status :: 4 - Beta",
        "Intended Audience :: Developers",
        "License :: OSI Approved :: MIT License",
        "Programming Language :: Python :: 3",
        "Programming Language :: Python :: 3.9",
        "Programming Language :: Python :: 3.10",
        "Programming Language :: Python :: 3.11",
        "Programming Language :: Python :: 3.12",
    ],
    python_requires=">=3.9",
)
