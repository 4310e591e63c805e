"""Z397 wire protocol: framing, escape packing, command builders and response parsing."""

from .framing import FrameReceiver, RawFrame, ProtocolErrorFrame
from .codec import assemble, checksum_ok, unpack_frame
from .commands import Command, build_command
from .parser import dispatch
