from betnad.server import main

main()
