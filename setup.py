"""Set-up file for ResFlow for installations using ``pip install .``"""
from setuptools import find_packages, setup


with open("requirements.txt") as f:
    required = f.read().splitlines()


setup(
    name="resflow",
    version="0.1.0",
    license="GPL",
    keywords=["reservoir simulation black-oil compositional automatic differentiation"],
    install_requires=required,
    extras_require={"testing": ["pytest"]},
    description="Fully implicit reservoir simulator with automatic differentiation",
    platforms=["Linux", "Windows", "Mac OS-X"],
    package_data={
        "resflow": ["py.typed"],
    },
    packages=find_packages("src"),
    package_dir={"": "src"},
    zip_safe=False,
)
