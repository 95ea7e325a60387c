from setuptools import find_packages, setup


setup(
    name='tiled-splatting',
    version='0.1',
    packages=find_packages(include=['tiled_splatting', 'tiled_splatting.*']),
    install_requires = [
        'taichi',
        'torch',
        'beartype',
        'tensordict',
        'tqdm',
        'roma',
    ],
    extras_require = {
        'test': ['pytest'],
    },
)
