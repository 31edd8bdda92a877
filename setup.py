from setuptools import setup

setup(
    name="SetLAA",
    version="1.0.0",
    description="Get or set the Large Address-Aware flag of Windows PE executables",
    py_modules=["LargeAddressAware", "SetLAA"],
    entry_points={
        "console_scripts": [
            "setlaa = SetLAA:main"
        ]
    },
    extras_require={
        "test": ["pytest"],
    },
    classifiers=[
        "Programming Language :: Python :: 3",
        "Operating System :: OS Independent",
        "License :: OSI Approved :: MIT License",
        "Topic :: Utilities",
        "Topic :: Software Development :: Build Tools",
        "Topic :: System :: Operating System",
    ],
    python_requires='>=3.7',
)
