import base64
import binascii
from typing import List, Optional

from pydantic import Field

from stockroom.schemas.analysis import ProductCondition
from stockroom.schemas.product import CamelModel, ProductBrief
from stockroom.services.exceptions import ValidationError
from stockroom.services.image_processing import ImageFile


class InlineData(CamelModel):
    data: str = Field(min_length=1)
    mime_type: str


class ImagePart(CamelModel):
    inline_data: InlineData


def image_parts_to_files(parts: List[ImagePart]) -> List[ImageFile]:
    """Decodes ``{inlineData: {data, mimeType}}`` parts into raw files."""
    files = []
    for index, part in enumerate(parts):
        payload = part.inline_data.data
        # tolerate a data-URL prefix from browsers
        if payload.startswith("data:") and "," in payload:
            payload = payload.split(",", 1)[1]
        try:
            raw = base64.b64decode(payload, validate=True)
        except (binascii.Error, ValueError) as e:
            raise ValidationError(
                f"Image {index} is not valid base64 data",
                field=f"images[{index}].inlineData.data",
            ) from e
        files.append(ImageFile(filename=f"image-{index + 1}", mime_type=part.inline_data.mime_type, data=raw))
    return files


class AnalyzeImagesRequest(CamelModel):
    images: List[ImagePart] = Field(min_length=1)


class BatchAnalyzeRequest(CamelModel):
    products: List[ProductBrief] = Field(min_length=1, max_length=100)


class AnalyzeProductRequest(CamelModel):
    images: List[ImagePart] = Field(default_factory=list)
    include_marketplace: bool = True
    wait: bool = True


class SynthesizePriceRequest(CamelModel):
    buy_price: float = Field(gt=0)
    current_price: Optional[float] = Field(default=None, ge=0)
    condition: ProductCondition = ProductCondition.USED_GOOD
    category: Optional[str] = None
    product_id: Optional[int] = None


class PurchaseSuggestionRequest(CamelModel):
    current_price: Optional[float] = Field(default=None, ge=0)
    condition: Optional[ProductCondition] = None
    category: Optional[str] = None
    product_id: Optional[int] = None
