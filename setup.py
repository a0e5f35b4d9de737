from setuptools import setup, find_packages

setup(
    name="cohortsim",
    version="0.3.0",
    description="Reproducible synthetic within/between-subject experiment datasets (staged cohorts + covariate) with an inferential-statistics walkthrough.",
    packages=find_packages(exclude=["tests", "tests.*"]),
    package_data={"cohortsim": ["schema/*.json"]},
    include_package_data=True,
    install_requires=[
        "openpyxl>=3.1",
        "pandas>=2.0",
        "scipy>=1.10",
        "statsmodels>=0.14",
        "numpy>=1.23",
        "jsonschema>=4.0",
    ],
    extras_require={
        "test": ["pytest>=7.0"],
    },
    python_requires=">=3.10",
)
