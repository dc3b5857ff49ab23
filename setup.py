from setuptools import setup, find_packages
from setuptools.command.install import install
from pathlib import Path
import shutil

class PostInstallCommand(install):
    """Post-installation for installation mode."""
    def run(self):
        install.run(self)

        # Determine config directory
        config_dir = Path.home() / '.local' / 'share' / 'edgewarden'
        config_file = config_dir / 'config.conf'
        template_file = Path(__file__).parent / 'config.conf.template'

        # Create directory if it doesn't exist
        config_dir.mkdir(parents=True, exist_ok=True)

        # Copy template if config doesn't exist
        if not config_file.exists() and template_file.exists():
            print(f"Installing default config to {config_file}")
            shutil.copy(template_file, config_file)
            print(f"Set api_token and the firewall settings in {config_file} before starting the agent")
        elif config_file.exists():
            print(f"Config file already exists at {config_file}, not overwriting")
        else:
            print(f"Warning: Template file not found at {template_file}")


setup(
    name="edgewarden",
    version="1.0.0",
    description="Per-host web server protection agent: access log detection with firewall auto-blocking",
    packages=find_packages(exclude=['tests', 'tests.*']),
    python_requires=">=3.9",
    install_requires=[
        "pydantic>=2.0",
        "pydantic-settings>=2.0",
        "PyYAML>=6.0",
        "watchdog>=3.0.0",
        "requests>=2.28",
        "boto3>=1.26",
        "geoip2>=4.7",
        "flask>=2.2",
        "cryptography>=41.0",
    ],
    extras_require={
        'test': ['pytest>=7.0'],
    },
    entry_points={
        'console_scripts': [
            'edgewarden=warden_agent.main:main',
        ],
    },
    cmdclass={
        'install': PostInstallCommand,
    },
    package_data={
        'warden_agent': ['rules/*.yaml'],
    },
    include_package_data=True,
)
