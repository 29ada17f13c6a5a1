from setuptools import setup, find_packages
import os

# Read requirements.txt
requirements_file = 'requirements.txt'
install_requires = []
if os.path.exists(requirements_file):
    with open(requirements_file, 'r') as f:
        install_requires = [line.strip() for line in f if line.strip() and not line.startswith('#')]

setup(
    name="solana-swap-assistant",
    version="0.1.0",
    packages=find_packages(include=['solana_swap_assistant', 'solana_swap_assistant.*']),
    install_requires=install_requires,
    extras_require={
        'test': ['pytest>=7.0', 'pytest-asyncio>=0.21'],
    },
    description="Token swaps on Solana through the Jupiter aggregator, with retry, failover and amount reduction",
    long_description=open('README.md').read() if os.path.exists('README.md') else '',
    long_description_content_type="text/markdown",
    python_requires=">=3.9",
    package_data={
        'solana_swap_assistant': ['*.yaml', '*.txt'],
    },
    include_package_data=True,
)
