"""
Wire tokens shared by the ARC API client and server.

Both sides must agree on these strings; the client never invents tokens.
A command frame is "<class>::<method>[ <arguments>]" and every response ends
in one of the OK sentinels or carries the exception sentinel.
"""

from enum import Enum
from types import MappingProxyType
from typing import Union

from arc_api_client.errors import ProtocolError


TCP_PORT = 5000  # Default port number for the server, can be changed as needed
METHOD_SEPARATOR = "::"
END_OF_LINE = "\r\n"

ERROR_STRING = "EXCEPTION"
CLIENT_OK_STRING = "CLIENT OK"
API_OK_STRING = "ARC API OK"

# Multi-string payloads (directory listings, header lists)
MULTI_STRING_DELIMITERS = ("|", "\0")
SPACE_ESCAPE = "+-+"


class ArcClass(Enum):
    SERVER = "arc::CArcAPIServer"
    DEVICE = "arc::CArcDevice"
    DEINTERLACE = "arc::CDeinterlace"
    FITS_FILE = "arc::CFitsFile"
    TIFF_FILE = "arc::CTiffFile"
    IMAGE = "arc::CImage"


class Method(Enum):
    # Server
    LogMsgOnServer = "LogMsgOnServer"
    EnableServerLog = "EnableServerLog"
    IsServerLogging = "IsServerLogging"
    GetServerVersion = "GetServerVersion"
    GetDirListing = "GetDirListing"
    Find = "Find"  # Discovery probe

    # Device
    ToString = "ToString"
    GetDeviceList = "GetDeviceList"
    FreeDeviceList = "FreeDeviceList"
    UseDevices = "UseDevices"
    IsOpen = "IsOpen"
    Open = "Open"
    Close = "Close"
    Reset = "Reset"
    MapCommonBuffer = "MapCommonBuffer"
    UnMapCommonBuffer = "UnMapCommonBuffer"
    ReMapCommonBuffer = "ReMapCommonBuffer"
    GetCommonBufferProperties = "GetCommonBufferProperties"
    FillCommonBuffer = "FillCommonBuffer"
    CommonBufferVA = "CommonBufferVA"
    CommonBufferPA = "CommonBufferPA"
    CommonBufferSize = "CommonBufferSize"
    CommonBufferPixels = "CommonBufferPixels"
    GetId = "GetId"
    GetStatus = "GetStatus"
    ClearStatus = "ClearStatus"
    Set2xFOTransmitter = "Set2xFOTransmitter"
    LoadDeviceFile = "LoadDeviceFile"
    GetCfgSpByte = "GetCfgSpByte"
    GetCfgSpWord = "GetCfgSpWord"
    GetCfgSpDWord = "GetCfgSpDWord"
    SetCfgSpByte = "SetCfgSpByte"
    SetCfgSpWord = "SetCfgSpWord"
    SetCfgSpDWord = "SetCfgSpDWord"

    # Controller setup & general commands
    Command = "Command"
    GetControllerId = "GetControllerId"
    ResetController = "ResetController"
    IsControllerConnected = "IsControllerConnected"
    SetupController = "SetupController"
    LoadControllerFile = "LoadControllerFile"
    SetImageSize = "SetImageSize"
    GetImageRows = "GetImageRows"
    GetImageCols = "GetImageCols"
    GetCCParams = "GetCCParams"
    IsCCParamSupported = "IsCCParamSupported"
    IsCCD = "IsCCD"
    IsBinningSet = "IsBinningSet"
    SetBinning = "SetBinning"
    UnSetBinning = "UnSetBinning"
    SetSubArray = "SetSubArray"
    UnSetSubArray = "UnSetSubArray"
    IsSyntheticImageMode = "IsSyntheticImageMode"
    SetSyntheticImageMode = "SetSyntheticImageMode"
    VerifyImageAsSynthetic = "VerifyImageAsSynthetic"

    # Exposure
    SetOpenShutter = "SetOpenShutter"
    Expose = "Expose"
    StopExposure = "StopExposure"
    Continuous = "Continuous"
    StopContinuous = "StopContinuous"
    IsReadout = "IsReadout"
    GetPixelCount = "GetPixelCount"
    GetCRPixelCount = "GetCRPixelCount"
    GetFrameCount = "GetFrameCount"
    SubtractImageHalves = "SubtractImageHalves"

    # Temperature
    GetArrayTemperature = "GetArrayTemperature"
    GetArrayTemperatureDN = "GetArrayTemperatureDN"
    SetArrayTemperature = "SetArrayTemperature"
    LoadTemperatureCtrlData = "LoadTemperatureCtrlData"
    SaveTemperatureCtrlData = "SaveTemperatureCtrlData"

    # Command logging
    GetNextLoggedCmd = "GetNextLoggedCmd"
    GetLoggedCmdCount = "GetLoggedCmdCount"
    SetLogCmds = "SetLogCmds"

    # Deinterlace
    RunAlg = "RunAlg"
    RunAlgFits = "RunAlgFits"
    RunAlgFits3D = "RunAlgFits3D"

    # FITS file
    CFitsFile = "CFitsFile"
    CloseFits = "CloseFits"
    GetFitsFilename = "GetFitsFilename"
    GetFitsHeader = "GetFitsHeader"
    WriteFitsKeyword = "WriteFitsKeyword"
    UpdateFitsKeyword = "UpdateFitsKeyword"
    GetFitsParameters = "GetFitsParameters"
    GenerateFitsTestData = "GenerateFitsTestData"
    ReOpenFits = "ReOpenFits"
    CompareFits = "CompareFits"
    ResizeFits = "ResizeFits"
    WriteFits = "WriteFits"
    WriteFitsSubImage = "WriteFitsSubImage"
    ReadFitsSubImage = "ReadFitsSubImage"
    ReadFits = "ReadFits"
    WriteFits3D = "WriteFits3D"
    ReWriteFits3D = "ReWriteFits3D"
    ReadFits3D = "ReadFits3D"

    # TIFF file
    CTiffFile = "CTiffFile"
    CloseTiff = "CloseTiff"
    GetTiffRows = "GetTiffRows"
    GetTiffCols = "GetTiffCols"
    WriteTiff = "WriteTiff"
    ReadTiff = "ReadTiff"

    # Image
    Histogram = "Histogram"
    FreeHistogram = "FreeHistogram"
    GetImageRow = "GetImageRow"
    GetImageCol = "GetImageCol"
    GetImageRowArea = "GetImageRowArea"
    GetImageColArea = "GetImageColArea"
    FreeImageData = "FreeImageData"
    GetStats = "GetStats"
    GetDiffStats = "GetDiffStats"
    GetFitsStats = "GetFitsStats"
    GetFitsDiffStats = "GetFitsDiffStats"


SENTINELS = (ERROR_STRING, CLIENT_OK_STRING, API_OK_STRING)


## CMD echo | set /p="arc::CArcAPIServer::GetServerVersion" | ncat.exe 127.0.0.1 5000

_seen = set()
for token in list(ArcClass) + list(Method):
    if not token.value or any(ch.isspace() for ch in token.value):
        raise ValueError(f"Token {token.name} must be a non-empty string without whitespace.")
    if token.value in SENTINELS:
        raise ValueError(f"Token {token.name} collides with a response sentinel.")
    if token.value in _seen:
        raise ValueError(f"Token {token.name} is defined more than once.")
    _seen.add(token.value)
del _seen


class MethodRegistry:
    """Read-only lookup from logical names to wire tokens."""

    METHODS = MappingProxyType({m.name: m.value for m in Method})
    CLASSES = MappingProxyType({c.name: c.value for c in ArcClass})

    @classmethod
    def token(cls, name: Union[Method, str]) -> str:
        """
        Resolve a method to its wire token.

        Args:
            name: A Method member, its member name, or its wire string

        Returns:
            str: The canonical wire token

        Raises:
            ProtocolError: If the name is not registered
        """
        if isinstance(name, Method):
            return name.value
        if name in cls.METHODS:
            return cls.METHODS[name]
        if name in cls.METHODS.values():
            return name
        raise ProtocolError(f"Unknown method token: {name!r}")

    @classmethod
    def class_token(cls, name: Union[ArcClass, str]) -> str:
        """Resolve a class to its wire token (e.g. "arc::CArcDevice")."""
        if isinstance(name, ArcClass):
            return name.value
        if name in cls.CLASSES:
            return cls.CLASSES[name]
        if name in cls.CLASSES.values():
            return name
        raise ProtocolError(f"Unknown class token: {name!r}")
