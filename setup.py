from setuptools import setup


setup(
    name="roster-doctor",
    version="0.1.0",
    description="Local column mapping, cleaning and validation for messy employee roster imports",
    packages=["roster_doctor"],
    include_package_data=True,
    install_requires=[
        "pandas",
        "chardet",
        "openpyxl",
        "streamlit",
        "requests",
        "rapidfuzz",
        "phonenumbers",
        "pycountry",
    ],
    extras_require={
        "excel-legacy": ["xlrd"],
        "ods": ["odfpy"],
        "all": ["xlrd", "odfpy"],
        "test": ["pytest"],
    },
    entry_points={
        "console_scripts": [
            "roster-doctor=roster_doctor.cli:main",
        ]
    },
)
