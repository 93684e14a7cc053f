from .common import delete_best_effort, should_compensate
from .create_image import StepCreateImage
from .create_instance import StepCreateInstance
from .create_snapshot import StepCreateSnapshot
from .delete_existing import StepDeleteExistingImages
from .keys import BUILD_STATE_CONTRACT, StateKey
from .pre_validate import StepPreValidate
from .region_copy import StepRegionCopyImage
from .source_image import StepCheckSourceImage
from .teardown import StepDeleteBuildInstance

__all__ = [
    "delete_best_effort",
    "should_compensate",
    "StepCreateImage",
    "StepCreateInstance",
    "StepCreateSnapshot",
    "StepDeleteExistingImages",
    "BUILD_STATE_CONTRACT",
    "StateKey",
    "StepPreValidate",
    "StepRegionCopyImage",
    "StepCheckSourceImage",
    "StepDeleteBuildInstance",
]
