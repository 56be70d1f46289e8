"""
Feature extractors: anything with embed(frame) -> vector | None.

TorchEmbedder wraps a torch backbone (default: torchvision ResNet18 without
its classifier) and runs on MPS > CUDA > CPU. torch/torchvision are imported
when the embedder is built, so the rest of the package works without them.
"""
from __future__ import annotations

from typing import Any, Callable, Protocol

import numpy as np

# ImageNet normalization used by torchvision backbones
IMAGENET_MEAN = [0.485, 0.456, 0.406]
IMAGENET_STD = [0.229, 0.224, 0.225]
MIN_FRAME_SIDE = 10


class Embedder(Protocol):
    def embed(self, frame: Any) -> np.ndarray | None:
        ...


class FunctionEmbedder:
    """Adapts a plain callable to the Embedder protocol."""

    def __init__(self, fn: Callable[[Any], Any]):
        self.fn = fn

    def embed(self, frame: Any) -> np.ndarray | None:
        out = self.fn(frame)
        if out is None:
            return None
        return np.asarray(out, dtype=np.float32).ravel()


def _device(torch: Any) -> Any:
    """Prefer MPS (Mac) > CUDA > CPU."""
    if getattr(torch.backends, "mps", None) and torch.backends.mps.is_available():
        return torch.device("mps")
    if torch.cuda.is_available():
        return torch.device("cuda")
    return torch.device("cpu")


class TorchEmbedder:
    """Embed HWC uint8 frames with a torch module; returns a flat float32 vector."""

    def __init__(self, model: Any = None, input_size: tuple[int, int] = (224, 224), device: Any = None):
        import torch
        from torchvision import transforms

        self._torch = torch
        self.device = device or _device(torch)
        if model is None:
            model = self._default_backbone()
        self.model = model.to(self.device)
        self.model.eval()
        self.input_size = input_size
        self._transform = transforms.Compose([
            transforms.ToPILImage(),
            transforms.Resize(input_size),
            transforms.ToTensor(),
            transforms.Normalize(mean=IMAGENET_MEAN, std=IMAGENET_STD),
        ])

    def _default_backbone(self) -> Any:
        import torchvision.models as tv

        backbone = tv.resnet18(weights=tv.ResNet18_Weights.IMAGENET1K_V1)
        return self._torch.nn.Sequential(*list(backbone.children())[:-1], self._torch.nn.Flatten())

    def embed(self, frame: Any) -> np.ndarray | None:
        if frame is None:
            return None
        crop = np.asarray(frame)
        if crop.size == 0:
            return None
        if crop.ndim == 2:
            crop = np.stack([crop] * 3, axis=-1)
        h, w = crop.shape[:2]
        if h < MIN_FRAME_SIDE or w < MIN_FRAME_SIDE:
            return None
        x = self._transform(crop.astype(np.uint8)).unsqueeze(0).to(self.device)
        with self._torch.no_grad():
            out = self.model(x)
        # Some backbones return (logits, features)
        if isinstance(out, (list, tuple)):
            out = out[-1]
        return out.cpu().numpy().astype(np.float32).ravel()
