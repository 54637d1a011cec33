from setuptools import setup, find_namespace_packages

setup(
    name='rsz-core',
    version='0.1.0',
    description='RE Engine RSZ codec and object graph for scn/pfb/user files',
    python_requires='>=3.8',
    packages=find_namespace_packages(include=['file_handlers', 'file_handlers.*', 'utils', 'utils.*']),
    py_modules=['settings', 'console_logger'],
    extras_require={'test': ['pytest']},
)
