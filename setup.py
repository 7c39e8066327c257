import setuptools
from setuptools.command.egg_info import egg_info


class egg_info_ex(egg_info):
    """Includes license file into `.egg-info` folder."""

    def run(self):
        # don't duplicate license into `.egg-info` when building a distribution
        if not self.distribution.have_run.get("install", True):
            # `install` command is in progress, copy license
            self.mkpath(self.egg_info)
            self.copy_file("LICENSE", self.egg_info)

        egg_info.run(self)


with open("LICENSE") as f:
    license = "".join(["\n", f.read()])

with open("README.md") as f:
    long_description = f.read()


setuptools.setup(
    name="asmshell",
    version="0.1.0",
    description="Interactive assembler shell and embeddable encode/decode API",
    long_description=long_description,
    long_description_content_type="text/markdown",
    packages=setuptools.find_packages(exclude=["asmshell_test", "asmshell_test.*"]),
    package_data={
        "asmshell": ["py.typed"],
    },
    install_requires=[
        "capstone>=5.0.1,<6",
        "keystone-engine>=0.9.2",
    ],
    classifiers=[
        "Programming Language :: Python :: 3",
        "Operating System :: OS Independent",
        "Topic :: Security",
        "Typing :: Typed",
    ],
    extras_require={
        "test": [
            "black>=23.3.0",
            "hypothesis>=6.39.3",
            "mypy>=0.942",
            "pytest",
            "pytest-cov",
        ]
    },
    python_requires=">=3.7",
    license=license,
    cmdclass={"egg_info": egg_info_ex},
    entry_points={
        "console_scripts": ["asmshell = asmshell.__main__:main"],
    },
)
