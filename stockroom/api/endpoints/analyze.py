import logging

from fastapi import APIRouter, Depends

from stockroom.api.deps import get_analyzer, get_current_user, get_normalizer
from stockroom.models import User
from stockroom.schemas.analysis import AnalysisFailure, ImageAnalysis
from stockroom.schemas.requests import AnalyzeImagesRequest, BatchAnalyzeRequest, image_parts_to_files
from stockroom.services.ai.analyzer import AIAnalyzer
from stockroom.services.ai.base import InlineImage
from stockroom.services.image_processing import ImageNormalizer

router = APIRouter()
logger = logging.getLogger(__name__)


@router.post("/images", response_model=ImageAnalysis)
async def analyze_images(
    body: AnalyzeImagesRequest,
    user: User = Depends(get_current_user),
    normalizer: ImageNormalizer = Depends(get_normalizer),
    analyzer: AIAnalyzer = Depends(get_analyzer),
):
    """
    Title, description, category and market analysis from product photos.
    """
    files = image_parts_to_files(body.images)
    encoded = await normalizer.normalize_batch(files)
    logger.info(f"User {user.id}: analyzing {len(encoded)} images")
    return await analyzer.analyze_images([InlineImage(data=data, mime_type="image/jpeg") for data in encoded])


@router.post("/batch")
async def analyze_batch(
    body: BatchAnalyzeRequest,
    user: User = Depends(get_current_user),
    analyzer: AIAnalyzer = Depends(get_analyzer),
):
    results = await analyzer.analyze_batch(body.products)
    payload = {}
    for product_id, result in results.items():
        if isinstance(result, AnalysisFailure):
            payload[str(product_id)] = {"error": result.error, "errorCode": result.error_code}
        else:
            payload[str(product_id)] = result.model_dump(mode="json", by_alias=True)
    return {"results": payload}
