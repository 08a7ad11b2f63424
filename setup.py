"""
Setup script for revert_indexer.
"""
import pathlib

from setuptools import find_packages, setup


def read_requirements(name):
    with pathlib.Path(name).open() as requirements_txt:
        return [
            line.strip()
            for line in requirements_txt
            if line.strip() and not line.lstrip().startswith("#")
        ]


install_requires = read_requirements("requirements.txt")
tests_require = read_requirements("dev-requirements.txt")

setup(
    name="revert_indexer",
    version="0.1.0",
    description="Classifies indexed transactions by tracing them for reverts and revert reasons",
    packages=find_packages(where="src"),
    package_dir={
        "": "src",
    },
    include_package_data=True,
    zip_safe=False,
    install_requires=install_requires,
    extras_require={"test": tests_require},
    entry_points={
        "console_scripts": [
            "revert-indexer=revert_indexer.main_pipeline:main",
        ],
    },
    python_requires=">=3.10",
    classifiers=[
        "Programming Language :: Python :: 3",
        "Operating System :: OS Independent",
    ],
)
