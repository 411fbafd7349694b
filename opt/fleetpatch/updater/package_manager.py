"""
External tool invocation for the update engine.

This module wraps the package manager (yum, rpm) and the repository tools
(yum-config-manager, reposync, createrepo, modifyrepo) the engine delegates
to, plus the writer for yum repository configuration files.
"""

import os
import asyncio
import logging
import configparser
from typing import Dict, List, Optional

from ..config_loader import get_repository_config
from ..errors import CommandFailedError

logger = logging.getLogger(__name__)


async def call_script(cmd: str, args: List[str], env: Optional[Dict] = None) -> str:
    """
    Run an external command and capture its output.

    Args:
        cmd: Path of the executable
        args: Command arguments
        env: Optional environment variables merged over the current ones

    Returns:
        str: The command's standard output

    Raises:
        CommandFailedError: if the command cannot be started or exits non-zero
    """
    command = ' '.join([cmd] + args)
    run_env = os.environ.copy()
    if env:
        run_env.update(env)

    logger.debug(f"Running command: {command}")
    try:
        process = await asyncio.create_subprocess_exec(
            cmd, *args,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
            env=run_env
        )
        stdout, stderr = await process.communicate()
    except OSError as e:
        logger.error(f"Error running command {command}: {e}")
        raise CommandFailedError(command, -1, str(e)) from e

    if process.returncode != 0:
        stderr_text = stderr.decode(errors='replace')
        logger.error(f"Command failed ({process.returncode}): {command}: {stderr_text.strip()}")
        raise CommandFailedError(command, process.returncode, stderr_text)

    return stdout.decode(errors='replace')


# --- yum repository configuration ---

def get_repo_config_path(repo_name: str) -> str:
    config = get_repository_config()
    return os.path.join(config['yum_repos_config_dir'], f"{repo_name}.repo")


def write_yum_config(repo_name: str, binary_url: str, source_url: Optional[str] = None,
                     gpgcheck: bool = True, sslverify: bool = True) -> str:
    """
    Write the yum .repo file of a repository.

    Args:
        repo_name: Repository id
        binary_url: Base URL of the binary packages
        source_url: Optional base URL of the source packages
        gpgcheck: Whether packages and metadata must be GPG-signed
        sslverify: Whether the server certificate is verified

    Returns:
        str: Path of the written file
    """
    parser = configparser.ConfigParser()
    flag = '1' if gpgcheck else '0'
    parser[repo_name] = {
        'name': repo_name,
        'baseurl': binary_url,
        'enabled': '0',
        'gpgcheck': flag,
        'repo_gpgcheck': flag,
        'sslverify': '1' if sslverify else '0',
    }
    if source_url:
        parser[f"{repo_name}-source"] = {
            'name': f"{repo_name}-source",
            'baseurl': source_url,
            'enabled': '0',
            'gpgcheck': flag,
            'repo_gpgcheck': flag,
        }

    path = get_repo_config_path(repo_name)
    os.makedirs(os.path.dirname(path), exist_ok=True)
    with open(path, 'w') as f:
        parser.write(f)
    logger.info(f"Wrote repository configuration {path} for {binary_url}")
    return path


def remove_repo_conf_file(repo_name: str) -> None:
    path = get_repo_config_path(repo_name)
    if os.path.exists(path):
        os.unlink(path)
        logger.debug(f"Removed repository configuration {path}")


# --- yum ---

async def clean_yum_cache(repo_name: str) -> None:
    """Drop the package manager's cached metadata of one repository."""
    config = get_repository_config()
    await call_script(config['yum_cmd'], [
        'clean', 'all', '--disablerepo=*', f"--enablerepo={repo_name}"
    ])


def get_cachedir(repo_name: str) -> str:
    """Directory where the package manager caches a repository's metadata."""
    return os.path.join(get_repository_config()['yum_cache_dir'], repo_name)


async def makecache(repo_name: str) -> None:
    """Download the metadata of one repository into the package manager cache."""
    config = get_repository_config()
    await call_script(config['yum_cmd'], [
        '-q', '--disablerepo=*', f"--enablerepo={repo_name}", 'makecache'
    ])


async def list_updates(repo_name: str) -> List[str]:
    """
    List available updates restricted to one repository.

    Returns:
        list: Raw output lines ('name.arch  version-release  repo')
    """
    config = get_repository_config()
    output = await call_script(config['yum_cmd'], [
        '-q', '--disablerepo=*', f"--enablerepo={repo_name}", 'list', 'updates'
    ])
    return output.splitlines()


async def upgrade(repo_name: str) -> str:
    """Upgrade all packages from one repository."""
    config = get_repository_config()
    logger.info(f"Running yum upgrade from repository {repo_name}...")
    output = await call_script(config['yum_cmd'], [
        '-y', '--disablerepo=*', f"--enablerepo={repo_name}", 'upgrade'
    ])
    logger.info("yum upgrade completed successfully")
    return output


async def get_installed_pkgs() -> str:
    """
    List installed packages.

    Returns:
        str: One 'name.arch version release' line per package
    """
    config = get_repository_config()
    return await call_script(config['rpm_cmd'], [
        '-qa', '--queryformat', '%{NAME}.%{ARCH} %{VERSION} %{RELEASE}\\n'
    ])


# --- Repository tools ---

async def yum_config_manager(repo_name: str, gpgcheck: bool) -> None:
    config = get_repository_config()
    await call_script(config['yum_config_manager_cmd'], [
        '--save',
        '--setopt=repo_gpgcheck=1' if gpgcheck else '--setopt=repo_gpgcheck=0',
        repo_name,
    ])


async def reposync(target_dir: str, repo_name: str, gpgcheck: bool) -> None:
    """Mirror a configured repository into target_dir, deleting stale files."""
    config = get_repository_config()
    args = ['-p', target_dir, '--downloadcomps', '--download-metadata']
    if gpgcheck:
        args.append('--gpgcheck')
    args += ['--delete', f"--repoid={repo_name}"]
    logger.info(f"Syncing repository {repo_name} into {target_dir}")
    await call_script(config['reposync_cmd'], args)


async def createrepo(repo_dir: str) -> None:
    config = get_repository_config()
    await call_script(config['createrepo_cmd'], [repo_dir])


async def modifyrepo_remove(mdtype: str, repodata_dir: str) -> None:
    config = get_repository_config()
    await call_script(config['modifyrepo_cmd'], ['--remove', mdtype, repodata_dir])


async def modifyrepo_add(mdtype: str, file_path: str, repodata_dir: str) -> None:
    config = get_repository_config()
    await call_script(config['modifyrepo_cmd'], ['--mdtype', mdtype, file_path, repodata_dir])
