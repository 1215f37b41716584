from modgate.moderation.aggregator import combine, reduce_video
from modgate.moderation.evaluators import ItemEvaluator
from modgate.moderation.media import MediaFetcher
from modgate.moderation.service import ModerationService, build_moderation_service
from modgate.moderation.video_analyzer import VideoAnalyzer, VideoStage
