"""Setup script for SkinScan Analyzer package."""

from setuptools import setup, find_packages
from pathlib import Path

# Read README if it exists
readme_file = Path(__file__).parent / "README.md"
long_description = ""
if readme_file.exists():
    long_description = readme_file.read_text(encoding="utf-8")

setup(
    name="skinscan-analyzer",
    version="0.1.0",
    description="Image quality gating, heuristic skin metrics and staged analysis orchestration",
    long_description=long_description,
    long_description_content_type="text/markdown",
    author="SkinScan Team",
    packages=find_packages(exclude=["tests*", "docs*"]),
    python_requires=">=3.10",
    install_requires=[
        "opencv-python>=4.9.0",
        "numpy>=1.26.0",
        "pandas>=2.2.0",
        "pillow>=10.3.0",
        "pyyaml>=6.0.0",
        "httpx>=0.27.0",
    ],
    extras_require={
        "dev": [
            "pytest>=7.4.0",
            "pytest-asyncio>=0.23.0",
            "black",
            "flake8",
            "mypy",
        ],
        "landmarks": [
            "mediapipe>=0.10.0",
        ],
    },
    entry_points={
        "console_scripts": [
            "skinscan-quality=scripts.check_quality:main",
            "skinscan-analyze=scripts.analyze_image:main",
        ],
    },
    classifiers=[
        "Development Status :: 3 - Alpha",
        "Intended Audience :: Developers",
        "Programming Language :: Python :: 3",
        "Programming Language :: Python :: 3.10",
        "Programming Language :: Python :: 3.11",
        "Programming Language :: Python :: 3.12",
    ],
)
