"""Setup script for ProxyDeck."""

from pathlib import Path

from setuptools import find_packages, setup

# Read requirements from requirements.txt
requirements_file = Path(__file__).parent / "requirements.txt"
with open(requirements_file, encoding="utf-8") as f:
    requirements = [line.strip() for line in f if line.strip() and not line.startswith("#")]

# Read version from proxydeck/__version__.py
version_file = Path(__file__).parent / "proxydeck" / "__version__.py"
version = {}
with open(version_file, encoding="utf-8") as f:
    exec(f.read(), version)

# Read long description from README
readme_file = Path(__file__).parent / "README.md"
with open(readme_file, encoding="utf-8") as f:
    long_description = f.read()

setup(
    name="proxydeck",
    version=version["__version__"],
    description="Local companion that supervises CLIProxyAPI, runs its provider logins and tracks usage",
    long_description=long_description,
    long_description_content_type="text/markdown",
    url=version["__repository__"],
    license="MIT",
    packages=find_packages(exclude=["tests", "tests.*"]),
    include_package_data=True,
    install_requires=requirements,
    extras_require={
        "test": ["pytest>=7", "httpx>=0.25"],
    },
    python_requires=">=3.11",
    entry_points={
        "console_scripts": [
            "proxydeck=proxydeck.companion:main",
        ],
    },
    classifiers=[
        "Development Status :: 4 - Beta",
        "Intended Audience :: Developers",
        "License :: OSI Approved :: MIT License",
        "Operating System :: OS Independent",
        "Programming Language :: Python :: 3",
        "Programming Language :: Python :: 3.11",
        "Programming Language :: Python :: 3.12",
        "Programming Language :: Python :: 3.13",
        "Topic :: Internet :: Proxy Servers",
        "Topic :: Utilities",
    ],
    keywords="llm proxy oauth cliproxyapi usage dashboard",
)
