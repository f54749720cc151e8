from setuptools import setup, find_packages

setup(
    name='swarmctl',
    version='0.1.0',
    packages=find_packages(exclude=['swarmctl.tests']),
    include_package_data=True,
    install_requires=[
        'typer[all]',
        'python-dotenv',
        'requests'
    ],
    extras_require={
        'test': [
            'pytest'
        ]
    },
    entry_points={
        'console_scripts': [
            'swarmctl=swarmctl.cli:app'
        ]
    },
    description='Idempotent provisioning of Ubuntu hosts as Docker Swarm control planes and workers',
    classifiers=[
        'Programming Language :: Python :: 3',
        'Operating System :: POSIX :: Linux',
    ],
    python_requires='>=3.8',
)
