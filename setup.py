"""Setup script for IRIS Agent."""

from setuptools import setup, find_packages
import os

# Read the README file
def read_readme():
    readme_path = os.path.join(os.path.dirname(__file__), 'README.md')
    if os.path.exists(readme_path):
        with open(readme_path, 'r', encoding='utf-8') as f:
            return f.read()
    return "IRIS Agent - hybrid command and intent resolution for room booking"

setup(
    name='iris-agent',
    version='0.1.0',
    description='Hybrid command/intent resolution and conversational state engine for a room booking assistant',
    long_description=read_readme(),
    long_description_content_type='text/markdown',
    author='IRIS Agent Team',
    author_email='dev@example.com',
    url='https://github.com/your-org/iris-agent',

    packages=find_packages(include=['iris_agent', 'iris_agent.*']),
    python_requires='>=3.10',
    install_requires=[
        'requests>=2.31.0',
        'pydantic>=2.0.0',
        'click>=8.1.0',
        'python-dotenv>=1.0.0',
        'pyyaml>=6.0',
    ],

    extras_require={
        'openai': ['openai>=1.0.0'],
        'anthropic': ['anthropic>=0.18.0'],
        'all': ['openai>=1.0.0', 'anthropic>=0.18.0'],
        'toml': ['tomli>=2.0.0'],
        'dev': [
            'pytest>=7.4.0',
            'pytest-asyncio>=0.21.0',
            'pytest-cov>=4.1.0',
            'black>=23.0.0',
            'flake8>=6.0.0',
            'mypy>=1.5.0',
        ],
    },

    entry_points={
        'console_scripts': [
            'iris-agent=iris_agent.cli:cli',
        ],
    },

    classifiers=[
        'Development Status :: 3 - Alpha',
        'Intended Audience :: End Users/Desktop',
        'Topic :: Office/Business :: Scheduling',
        'License :: OSI Approved :: MIT License',
        'Programming Language :: Python :: 3',
        'Programming Language :: Python :: 3.10',
        'Programming Language :: Python :: 3.11',
        'Programming Language :: Python :: 3.12',
    ],

    keywords='room booking assistant intent parsing state machine llm',

    include_package_data=True,
    zip_safe=False,
)
