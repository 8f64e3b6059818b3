import asyncio
import sys

from loguru import logger
from dataset_collection_client.dataset_collection_client import DatasetCollectionClient
from dataset_collection_client.errors import CollectionError, ConfigurationError
from dataset_collection_client.output import write_results
from dataset_collection_client.settings import CollectionSettings

# Replace these values with your target website and requirements
INPUTS = [
    {
        "url": "https://www.perplexity.ai",
        "prompt": "Automation",
        "country": "US",
    }
]


def log_progress(status_response):
    logger.info(
        f"Progress: status={status_response.status.value} "
        f"pages_crawled={status_response.progress.pages_crawled} "
        f"pages_extracted={status_response.progress.pages_extracted}"
    )


async def main() -> int:
    try:
        settings = CollectionSettings.from_env()
    except ConfigurationError as e:
        logger.error(f"Error: {e}")
        return 1

    client = DatasetCollectionClient(
        settings.api_key,
        base_url=settings.base_url,
        config=settings.polling_config(),
        on_progress=log_progress,
    )

    try:
        logger.info("Starting collection...")
        results = await client.collect(settings.dataset_id, INPUTS)
        output_file = write_results(results, settings.output_dir)
    except CollectionError as e:
        logger.error(f"Error: {e}")
        if e.response_body:
            logger.error(f"API Response: {e.response_body}")
        return 1
    except OSError as e:
        logger.error(f"Error: could not save results: {e}")
        return 1

    logger.info(f"Results saved to: {output_file}")
    return 0


if __name__ == "__main__":
    sys.exit(asyncio.run(main()))
