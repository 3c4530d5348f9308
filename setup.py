import os
from pathlib import Path

from setuptools import find_packages, setup  # isort: skip


HERE = Path(__file__).resolve().parent


def get_long_description():
    readme = HERE / "README.md"
    if not readme.exists():
        return ""
    return readme.read_text(encoding="utf-8")


setup(
    name="crosscov",
    version=os.getenv("CROSSCOV_BUILD_VERSION", "1.0.0"),
    description="Coverage of Python code across cooperating processes",
    long_description=get_long_description(),
    long_description_content_type="text/markdown",
    license="BSD-3-Clause",
    python_requires=">=3.9",
    packages=find_packages(exclude=["tests*", "benchmarks*", "scripts*"]),
    package_data={
        "crosscov": ["py.typed"],
    },
    zip_safe=False,
    install_requires=[
        "envier~=0.5",
        "wrapt>=1.14",
    ],
    extras_require={
        "test": [
            "pytest>=7",
            "mock",
            "hypothesis",
        ],
    },
    entry_points={
        "console_scripts": [
            "crosscov-run = crosscov.commands.crosscov_run:main",
        ],
    },
    classifiers=[
        "Programming Language :: Python :: 3",
        "Programming Language :: Python :: 3 :: Only",
        "Topic :: Software Development :: Testing",
    ],
)
