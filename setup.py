import re
from pathlib import Path

from setuptools import setup, find_packages

version = re.search(
    r"version = '(.+)'",
    Path(__file__).parent.joinpath('src', 'naturalneighbor', '_version.py').read_text()).group(1)

setup(
    name='naturalneighbor',
    version=version,
    description='Discrete natural neighbor interpolation in 3D',
    package_dir={'': 'src'},
    packages=find_packages('src'),
    python_requires='>=3.8',
    install_requires=['numpy', 'scipy'],
    extras_require={'test': ['pytest']},
)
