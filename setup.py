import os
import re
import setuptools


# for simplicity we actually store the version in the __version__ attribute in the source
here = os.path.realpath(os.path.dirname(__file__))
with open(os.path.join(here, 'odecurriculum', '__init__.py')) as f:
    meta_match = re.search(r"^__version__ = ['\"]([^'\"]*)['\"]", f.read(), re.M)
    if meta_match:
        version = meta_match.group(1)
    else:
        raise RuntimeError("Unable to find __version__ string.")


setuptools.setup(
    name="odecurriculum",
    version=version,
    description="Curriculum fitting of neural ODEs over growing time horizons in PyTorch.",
    packages=setuptools.find_packages(include=['odecurriculum', 'odecurriculum.*']),
    install_requires=['torch>=2.0.0', 'torchdiffeq>=0.2.3', 'numpy', 'scipy>=1.11'],
    extras_require={'test': ['pytest']},
    python_requires='>=3.8',
    classifiers=[
        "Programming Language :: Python :: 3",
        "License :: OSI Approved :: MIT License",
    ],
)
