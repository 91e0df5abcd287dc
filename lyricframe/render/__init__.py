from lyricframe.render.layer_compositor import CompositeOptions, FrameCompositor, LayerType, Slide
from lyricframe.render.local_encoder import LocalEncoder
from lyricframe.render.pipeline import ExportPipeline, ExportProgress, ExportResult, ExportStage
from lyricframe.render.remote_encoder import RemoteSessionEncoder
from lyricframe.render.timeline import RenderConfig, Timeline, merge_render_config

__all__ = [
    "ExportPipeline",
    "ExportProgress",
    "ExportResult",
    "ExportStage",
    "FrameCompositor",
    "CompositeOptions",
    "LayerType",
    "Slide",
    "LocalEncoder",
    "RemoteSessionEncoder",
    "RenderConfig",
    "Timeline",
    "merge_render_config",
]
