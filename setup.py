from setuptools import setup, find_packages

NAME = "nnchain"
VERSION = "0.1.0"
DESCRIPTION = ("Layer chain core of a small feed-forward neural network "
               "library with first- and second-order backpropagation.")

REQUIRED = ["numpy>=1.24"]
EXTRAS = {"test": ["pytest>=7"]}

try:
    with open("README.md", "r", encoding="utf-8") as f:
        LONG_DESCRIPTION = f.read()
except FileNotFoundError:
    LONG_DESCRIPTION = DESCRIPTION

setup(name=NAME,
      version=VERSION,
      description=DESCRIPTION,
      long_description=LONG_DESCRIPTION,
      long_description_content_type="text/markdown",
      package_dir={"": "src"},
      packages=find_packages(where="src"),
      python_requires=">=3.8",
      install_requires=REQUIRED,
      extras_require=EXTRAS)
