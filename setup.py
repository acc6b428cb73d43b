from setuptools import setup, find_packages
setup(
    name="permit_leads",
    version="0.0.1",
    package_dir={"": "src"},
    packages=find_packages("src"),
    include_package_data=True,
    python_requires=">=3.9",
    install_requires=[
        "httpx>=0.24",
        "pydantic>=2.0",
        "beautifulsoup4>=4.11",
        "fastapi>=0.100",
    ],
    extras_require={
        "test": [
            "pytest>=7",
        ],
    },
    entry_points={
        'console_scripts': [
            'permit_leads=permit_leads.__main__:main'
        ]
    }
)
