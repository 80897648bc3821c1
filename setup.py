from setuptools import setup, find_packages

setup(
    name='kubeprov',
    version='0.1.0',
    packages=find_packages(exclude=['scripts']),
    include_package_data=True,
    install_requires=[
        'typer',
        'fastapi',
        'uvicorn',
        'kubernetes',
        'python-dotenv',
        'requests',
        'pyyaml',
        'pydantic>=2',
        'paramiko',
        'jsonschema',
        'urllib3',
    ],
    extras_require={
        'test': [
            'pytest',
            'httpx',
        ],
    },
    entry_points={
        'console_scripts': [
            'kubeprov=kubeprov.cli:run'
        ]
    },
    description='Idempotent, resumable kubeadm cluster provisioning CLI and API',
    classifiers=[
        'Programming Language :: Python :: 3',
        'Operating System :: POSIX :: Linux',
    ],
    python_requires='>=3.8',
)
