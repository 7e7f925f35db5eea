from setuptools import setup, find_packages
import os

# Read version from __init__.py
def get_version():
    """Get version from imgforge/__init__.py"""
    init_file = os.path.join(os.path.dirname(__file__), "imgforge", "__init__.py")
    with open(init_file, "r") as f:
        for line in f:
            if line.startswith("__version__"):
                return line.split("=")[1].strip().strip('"\'')
    raise RuntimeError("Unable to find version string.")

# Installation Examples:
# - Base package only: pip install imgforge
# - With object-store connections (s3, r2, dospaces): pip install "imgforge[remote]"
# - Development: pip install -e ".[dev]"

extras_require = {
    # Development dependencies
    "dev": [
        "pytest>=7.4.0",
        "pytest-cov>=4.1.0",
        "coverage>=7.3.2",
    ],

    # Object-store cache connections, resolved by zarr through fsspec
    "remote": [
        "fsspec>=2023.6.0",
        "s3fs>=2023.6.0",
    ],
}

# Programmatically create "all" extra by combining all non-dev extras
all_deps = []
for extra_name, deps in extras_require.items():
    if extra_name != "dev":
        all_deps.extend(deps)

extras_require["all"] = list(dict.fromkeys(all_deps))

setup(
    name="imgforge",
    version=get_version(),
    description="On-demand image transformation engine with a persistent result cache",
    long_description=open("README.md", "r", encoding="utf-8").read(),
    long_description_content_type="text/markdown",
    classifiers=[
        "Development Status :: 3 - Alpha",
        "Intended Audience :: Developers",
        "Topic :: Multimedia :: Graphics :: Graphics Conversion",
        "Topic :: Internet :: WWW/HTTP :: Dynamic Content",
        "Programming Language :: Python :: 3",
        "Programming Language :: Python :: 3.9",
        "Programming Language :: Python :: 3.10",
        "Programming Language :: Python :: 3.11",
        "Programming Language :: Python :: 3.12",
        "Operating System :: POSIX",
    ],
    python_requires=">=3.9",
    keywords="image-processing, thumbnails, image-cache, filters, watermark",
    packages=find_packages(include=["imgforge", "imgforge.*"]),
    install_requires=[
        # Core image processing and scientific computing
        "numpy>=1.26.4",
        "scikit-image>=0.25.2",
        "scikit-learn>=1.7.1",  # KMeans colour quantization
        "scipy>=1.12.0",

        # Image I/O
        "imageio>=2.37.0",
        "opencv-python>=4.11.0.86,<5",

        # Storage and configuration
        "PyYAML>=6.0.2",
        "zarr>=2.18.7,<3.0",

        # Remote sources
        "requests>=2.31.0",
    ],
    extras_require=extras_require,
)
