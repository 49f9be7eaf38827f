from swf_decider.decider.swf.client import SwfClient

__all__ = ["SwfClient"]
