"""Setup script for vipool"""
from setuptools import setup
from pathlib import Path
readme_path = Path(__file__).parent / "README.md"
long_description = readme_path.read_text(encoding="utf-8") if readme_path.exists() else ""
setup(
    name="vipool",
    version="1.0.0",
    author="vipool Project",
    author_email="info@vipool.dev",
    description="Edit many source files as a single file, kept in sync while you edit",
    long_description=long_description,
    long_description_content_type="text/markdown",
    url="https://github.com/yourusername/vipool",
    project_urls={
        "Bug Reports": "https://github.com/yourusername/vipool/issues",
        "Source": "https://github.com/yourusername/vipool",
    },
    py_modules=["vipool"],
    python_requires=">=3.8",
    install_requires=["rich>=10.0.0"],
    extras_require={
        "dev": ["pytest>=6.0.0", "black>=22.0.0", "flake8>=4.0.0", "pytest-asyncio"],
    },
    entry_points={
        "console_scripts": [
            "vipool=vipool:cli_main",
        ],
    },
    classifiers=[
        "Development Status :: 4 - Beta",
        "Intended Audience :: Developers",
        "License :: OSI Approved :: MIT License",
        "Programming Language :: Python :: 3",
        "Programming Language :: Python :: 3.8",
        "Programming Language :: Python :: 3.9",
        "Programming Language :: Python :: 3.10",
        "Programming Language :: Python :: 3.11",
        "Topic :: Software Development :: Tools",
        "Topic :: Text Editors",
    ],
)
