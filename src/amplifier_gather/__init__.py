"""amplifier-gather - Fetch files, directories, git repositories and OCI artifacts.

Public API exports.

Per KERNEL_PHILOSOPHY: This is library mechanism, apps inject policy
(configuration, transports, credentials, lock location).
"""

from .classifier import URIClassifier
from .classifier import URIKind
from .classifier import classify_uri
from .classifier import validate_file_destination
from .config import GatherConfig
from .copier import copy_directory
from .dispatcher import Dispatcher
from .dispatcher import default_registry
from .dispatcher import gather
from .exceptions import AuthenticationError
from .exceptions import ClassificationError
from .exceptions import CopyError
from .exceptions import FetchError
from .exceptions import GatherError
from .exceptions import LocatorParseError
from .exceptions import PinningError
from .exceptions import UnsupportedProtocolError
from .expander import TarExpander
from .file_gatherer import FileGatherer
from .git_gatherer import DulwichCloner
from .git_gatherer import GitGatherer
from .git_gatherer import SSHAgentAuthenticator
from .git_gatherer import SSHCredential
from .git_url import ParsedGitLocator
from .git_url import process_git_url
from .http_gatherer import HTTPGatherer
from .installer import gather_and_lock
from .lock import GatherLock
from .lock import GatherLockEntry
from .metadata import DirectoryMetadata
from .metadata import FileMetadata
from .metadata import GitMetadata
from .metadata import HTTPMetadata
from .metadata import Metadata
from .metadata import OCIMetadata
from .oci_gatherer import OCIGatherer
from .oci_gatherer import OCIReference
from .oci_gatherer import RegistryPuller
from .oci_gatherer import parse_reference
from .pinning import pin_file_url
from .pinning import pin_git_url
from .pinning import pin_oci_url
from .protocols import ArtifactPullerProtocol
from .protocols import GathererProtocol
from .protocols import GitClonerProtocol
from .protocols import MetadataProtocol
from .protocols import SaverProtocol
from .protocols import SSHAuthenticatorProtocol
from .saver import FileSaver
from .saver import new_saver

__all__ = [
    # Dispatch
    "Dispatcher",
    "default_registry",
    "gather",
    "gather_and_lock",
    # Classification
    "URIClassifier",
    "URIKind",
    "classify_uri",
    "validate_file_destination",
    "ParsedGitLocator",
    "process_git_url",
    "OCIReference",
    "parse_reference",
    # Gatherers
    "FileGatherer",
    "HTTPGatherer",
    "GitGatherer",
    "OCIGatherer",
    "DulwichCloner",
    "SSHAgentAuthenticator",
    "SSHCredential",
    "RegistryPuller",
    # Copy, save, expand
    "copy_directory",
    "FileSaver",
    "new_saver",
    "TarExpander",
    # Metadata and pinning
    "Metadata",
    "GitMetadata",
    "HTTPMetadata",
    "FileMetadata",
    "DirectoryMetadata",
    "OCIMetadata",
    "pin_git_url",
    "pin_oci_url",
    "pin_file_url",
    # Lock file
    "GatherLock",
    "GatherLockEntry",
    # Configuration
    "GatherConfig",
    # Protocols
    "GathererProtocol",
    "MetadataProtocol",
    "SaverProtocol",
    "GitClonerProtocol",
    "SSHAuthenticatorProtocol",
    "ArtifactPullerProtocol",
    # Exceptions
    "GatherError",
    "ClassificationError",
    "LocatorParseError",
    "UnsupportedProtocolError",
    "CopyError",
    "PinningError",
    "FetchError",
    "AuthenticationError",
]

__version__ = "0.1.0"
