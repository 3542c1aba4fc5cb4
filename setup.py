from setuptools import setup


setup(
    name="freight-doctor",
    version="0.1.0",
    description="Column-shift repair, value normalisation and header unification for customs broker exports",
    packages=["freight_doctor"],
    python_requires=">=3.9",
    install_requires=[
        "pandas",
        "chardet",
        "openpyxl",
    ],
    extras_require={
        "excel-legacy": ["xlrd"],
        "all": ["xlrd"],
    },
    entry_points={
        "console_scripts": [
            "freight-doctor=freight_doctor.cli:main",
        ]
    },
)
